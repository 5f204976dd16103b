"""
调度引擎异常。调用方同步收到，引擎内部不做重试。
"""


class SchedulerError(Exception):
    """调度引擎异常基类"""

    code = 400
    error_type = "SCHEDULER_ERROR"

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message


class InvalidArgumentError(SchedulerError):
    """参数缺失或非法（时长 <= 0 等）"""

    code = 400
    error_type = "INVALID_ARGUMENT"


class DuplicateRequestError(SchedulerError):
    """用户已有排队中 / 移动中 / 充电中的请求"""

    code = 403
    error_type = "DUPLICATE_REQUEST"


class SpotUnavailableError(SchedulerError):
    """目标车位不是空置状态"""

    code = 403
    error_type = "SPOT_UNAVAILABLE"


class UnknownSpotError(SpotUnavailableError):
    """车位编号不存在"""

    code = 404
    error_type = "SPOT_NOT_FOUND"


class NotFoundError(SchedulerError):
    """取消时找不到对应的充电请求"""

    code = 404
    error_type = "NOT_FOUND"
