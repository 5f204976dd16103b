from flask_socketio import emit
from flask import current_app, request
from datetime import datetime

from utils.logger import get_logger

logger = get_logger(__name__)


def register_socketio_events(socketio):
    """注册WebSocket事件处理器"""

    @socketio.on('connect')
    def handle_connect():
        """处理客户端连接"""
        logger.debug("客户端连接: %s", request.sid)
        emit('connected', {'message': '连接成功', 'sid': request.sid})

    @socketio.on('disconnect')
    def handle_disconnect(*args):
        logger.debug("客户端断开连接: %s", request.sid)

    @socketio.on('request_spot_status')
    def handle_request_spot_status():
        """客户端主动拉取车位与队列状态"""
        service = current_app.extensions.get('charging_schedule_service')
        if service is None:
            emit('error', {'message': '调度服务不可用'})
            return
        try:
            emit('status_update', service.get_system_status_for_ui())
        except Exception:
            logger.exception("处理车位状态请求错误")
            emit('error', {'message': '获取车位状态失败'})

    @socketio.on('ping')
    def handle_ping():
        """处理心跳检测"""
        emit('pong', {'timestamp': datetime.now().isoformat()})
