from flask import Blueprint, request, current_app
from functools import wraps

from scheduler_core import Dispatched, SchedulerError
from utils.logger import get_logger
from utils.response import (
    error_response,
    scheduler_error_response,
    success_response,
    validation_error_response,
)
from utils.validators import validate_charging_time, validate_required_fields, validate_spot_id

logger = get_logger(__name__)

# 创建蓝图
charging_bp = Blueprint('charging', __name__)


def service_required(f):
    """确认调度服务已初始化，并把它作为第一个参数传入"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        service = current_app.extensions.get('charging_schedule_service')
        if service is None or not getattr(service, '_initialized', False):
            return error_response("调度服务不可用", code=503, error_type="SERVICE_UNAVAILABLE")
        try:
            return f(service, *args, **kwargs)
        except SchedulerError as e:
            return scheduler_error_response(e)
        except Exception:
            logger.exception("处理请求失败: %s", request.path)
            return error_response("處理請求失敗", code=500, error_type="INTERNAL_ERROR")
    return decorated_function


@charging_bp.route('/parking-spots', methods=['GET'])
@service_required
def list_parking_spots(service):
    """所有车位，按编号排序"""
    spots = [v.to_dict() for v in service.get_all_spots()]
    return success_response(data=spots)


@charging_bp.route('/parking-spot/<int:spot_id>', methods=['GET'])
@service_required
def get_parking_spot(service, spot_id):
    """单个车位详情，含剩余时间与预计等待时间"""
    return success_response(data=service.get_spot_view(spot_id).to_dict())


@charging_bp.route('/charging-queue', methods=['GET'])
@service_required
def get_charging_queue(service):
    queue = [v.to_dict() for v in service.get_queue_view()]
    return success_response(data=queue)


@charging_bp.route('/charging-user', methods=['GET'])
@service_required
def get_charging_user(service):
    view = service.get_charging_spot()
    return success_response(data=view.to_dict() if view else None)


@charging_bp.route('/charging-move', methods=['GET'])
@service_required
def get_charging_move(service):
    view = service.get_moving_spot()
    return success_response(data=view.to_dict() if view else None)


@charging_bp.route('/request-charging', methods=['POST'])
@service_required
def request_charging(service):
    """用户提交充电请求"""
    data = request.get_json(silent=True) or {}

    errors = validate_required_fields(data, ['spotId', 'chargingTime', 'userId'])
    if errors:
        return validation_error_response(errors)

    ok, msg = validate_spot_id(data['spotId'])
    if not ok:
        errors['spotId'] = msg
    ok, msg = validate_charging_time(data['chargingTime'])
    if not ok:
        errors['chargingTime'] = msg
    if errors:
        return validation_error_response(errors, message="参数错误")

    result = service.request_charging(
        str(data['userId']).strip(), int(data['spotId']), float(data['chargingTime'])
    )
    if isinstance(result, Dispatched):
        return success_response(
            data={
                'status': result.status,
                'spotId': result.spot_id,
                'etaSecondsUntilChargeStart': result.eta_seconds_until_charge_start,
                'spot': service.get_spot_view(result.spot_id).to_dict(),
            },
            message="充電器正在移動中",
        )
    return success_response(
        data={
            'status': result.status,
            'spotId': result.spot_id,
            'positionInLine': result.position_in_line,
            'etaMinutes': result.eta_minutes,
            'spot': service.get_spot_view(result.spot_id).to_dict(),
        },
        message="已加入充電隊列",
    )


@charging_bp.route('/cancel-charging', methods=['POST'])
@service_required
def cancel_charging(service):
    """取消充电请求（排队中 / 移动中 / 充电中）"""
    data = request.get_json(silent=True) or {}

    errors = validate_required_fields(data, ['spotId', 'userId'])
    if errors:
        return validation_error_response(errors)
    ok, msg = validate_spot_id(data['spotId'])
    if not ok:
        return validation_error_response({'spotId': msg}, message="参数错误")

    result = service.cancel_charging(str(data['userId']).strip(), int(data['spotId']))
    return success_response(
        data={
            'spotId': result.spot_id,
            'previousState': result.previous_state.value,
            'promotedSpotId': result.promoted_spot_id,
        },
        message="充電請求已取消",
    )


@charging_bp.route('/reset-spots', methods=['POST'])
@service_required
def reset_spots(service):
    """所有车位重置为空置中，清空队列"""
    service.reset_all()
    return success_response(message="所有車位已重置為空置中")
