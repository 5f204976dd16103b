import os


def _env_bool(name, default):
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ('1', 'true', 'yes', 'on')


class Config:
    """基础配置类"""
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'your-secret-key-here-change-in-production'

    # 数据库配置（默认本地 SQLite）
    BASE_DIR = os.path.abspath(os.path.dirname(__file__))
    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        'sqlite:///' + os.path.join(BASE_DIR, 'charging_spots.db')
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
    }

    # 充电线调度配置
    SPOT_COUNT = int(os.environ.get('SPOT_COUNT') or 11)            # 车位数量，编号从 1 开始
    CABLE_MOVE_SECONDS = float(os.environ.get('CABLE_MOVE_SECONDS') or 30)
    FINISH_LINGER_SECONDS = float(os.environ.get('FINISH_LINGER_SECONDS') or 5)
    TICK_INTERVAL_SECONDS = float(os.environ.get('TICK_INTERVAL_SECONDS') or 1)
    EVENT_POLL_SECONDS = float(os.environ.get('EVENT_POLL_SECONDS') or 1)

    # 启动时是否清空所有车位（否则从数据库恢复）
    RESET_ON_STARTUP = _env_bool('RESET_ON_STARTUP', False)
    # 是否启动后台定时任务
    SCHEDULER_AUTOSTART = True

    # CORS
    CORS_ORIGINS = [
        o.strip() for o in (os.environ.get('CORS_ORIGINS') or 'http://localhost:3000').split(',')
        if o.strip()
    ]

    # 日志配置
    LOG_LEVEL = os.environ.get('LOG_LEVEL') or 'INFO'
    LOG_FILE = os.environ.get('LOG_FILE') or None

    JSON_AS_ASCII = False  # 支持中文JSON响应

    API_VERSION = 'v1'
    API_TITLE = '充电车位调度系统API'


class DevelopmentConfig(Config):
    """开发环境配置"""
    DEBUG = True
    TESTING = False
    SQLALCHEMY_ECHO = False


class TestingConfig(Config):
    """测试环境配置"""
    DEBUG = True
    TESTING = True

    # 内存数据库，不启动后台任务
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ENGINE_OPTIONS = {}
    SCHEDULER_AUTOSTART = False
    RESET_ON_STARTUP = False
    LOG_LEVEL = 'DEBUG'


class ProductionConfig(Config):
    """生产环境配置"""
    DEBUG = False
    TESTING = False

    DB_HOST = os.environ.get('DB_HOST') or 'localhost'
    DB_PORT = os.environ.get('DB_PORT') or 3306
    DB_USER = os.environ.get('DB_USER') or 'root'
    DB_PASSWORD = os.environ.get('DB_PASSWORD') or 'password'
    DB_NAME = os.environ.get('DB_NAME') or 'charging_spots'

    SQLALCHEMY_DATABASE_URI = os.environ.get('DATABASE_URL') or \
        f'mysql+pymysql://{DB_USER}:{DB_PASSWORD}@{DB_HOST}:{DB_PORT}/{DB_NAME}'
    SQLALCHEMY_ENGINE_OPTIONS = {
        'pool_pre_ping': True,
        'pool_recycle': 3600,  # 1小时回收连接
        'pool_timeout': 30,
        'max_overflow': 10,
        'pool_size': 20
    }

    LOG_LEVEL = 'WARNING'


# 根据环境变量选择配置
config = {
    'development': DevelopmentConfig,
    'testing': TestingConfig,
    'production': ProductionConfig,
    'default': DevelopmentConfig
}


def get_config(config_name=None):
    """获取当前配置"""
    config_name = config_name or os.environ.get('FLASK_ENV', 'development')
    return config.get(config_name, config['default'])
