from flask import Flask
from flask_socketio import SocketIO
from flask_cors import CORS
from dotenv import load_dotenv
import os

# 加载环境变量
load_dotenv()

from config import get_config
from models.spot import db
from utils.logger import configure_logging, get_logger

logger = get_logger(__name__)


def init_database(app):
    """初始化数据库"""
    with app.app_context():
        db.create_all()
        logger.info("数据表创建成功")


def create_app(config_name=None, clock=None):
    """创建Flask应用"""
    app = Flask(__name__)

    # 加载配置
    config_class = get_config(config_name)
    app.config.from_object(config_class)
    configure_logging(app.config['LOG_LEVEL'], app.config.get('LOG_FILE'))

    # 初始化扩展
    db.init_app(app)
    CORS(app, origins=app.config['CORS_ORIGINS'], supports_credentials=True)

    # 初始化SocketIO
    socketio = SocketIO(
        app,
        cors_allowed_origins=app.config['CORS_ORIGINS'],
        async_mode='threading',
        logger=False,
        engineio_logger=False
    )

    # 注册WebSocket事件
    from websocket.events import register_socketio_events
    register_socketio_events(socketio)

    # 注册API蓝图
    register_blueprints(app)

    # 初始化数据库
    init_database(app)

    # 初始化调度服务
    init_schedule_service(app, socketio, clock)

    # 健康检查路由
    @app.route('/health')
    def health_check():
        return {'status': 'healthy', 'message': '充电车位调度系统运行正常'}

    return app, socketio


def register_blueprints(app):
    """注册所有API蓝图"""
    from api.charging import charging_bp

    app.register_blueprint(charging_bp, url_prefix='/api')


def init_schedule_service(app, socketio, clock=None):
    """初始化调度服务"""
    from services.scheduler_service import ChargingScheduleService

    service = ChargingScheduleService(socketio=socketio, clock=clock)
    service.init_app(app)

    app.extensions['charging_schedule_service'] = service
    app.extensions['socketio'] = socketio
    return service


if __name__ == '__main__':
    app, socketio = create_app()

    debug_mode = os.environ.get('FLASK_DEBUG', 'True').lower() == 'true'
    port = int(os.environ.get('PORT', 5000))

    print("=" * 60)
    print("充电车位调度系统启动中...")
    print(f"调试模式: {debug_mode}")
    print(f"端口: {port}")
    print(f"车位数量: {app.config['SPOT_COUNT']}")
    print(f"充电线移动时间: {app.config['CABLE_MOVE_SECONDS']} 秒")
    print("=" * 60)

    socketio.run(
        app,
        debug=debug_mode,
        port=port,
        host='0.0.0.0',
        use_reloader=False,
        allow_unsafe_werkzeug=True
    )
