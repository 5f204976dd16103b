import math
from typing import Any, Dict, List


def validate_required_fields(data: Dict[str, Any], required_fields: List[str]) -> Dict[str, str]:
    """验证必需字段"""
    errors = {}
    for field in required_fields:
        if field not in data or data[field] is None:
            errors[field] = f"{field}字段不能为空"
        elif isinstance(data[field], str) and not data[field].strip():
            errors[field] = f"{field}字段不能为空"
    return errors


def validate_spot_id(spot_id) -> tuple:
    """验证车位编号，前端可能传字符串"""
    if isinstance(spot_id, bool):
        return False, "车位编号必须是整数"
    try:
        value = int(spot_id)
    except (TypeError, ValueError):
        return False, "车位编号必须是整数"
    if isinstance(spot_id, float) and spot_id != value:
        return False, "车位编号必须是整数"
    if value <= 0:
        return False, "车位编号必须大于0"
    return True, ""


def validate_charging_time(charging_time) -> tuple:
    """验证充电时间（分钟）"""
    if isinstance(charging_time, bool):
        return False, "充电时间必须是有效数字"
    try:
        value = float(charging_time)
    except (TypeError, ValueError):
        return False, "充电时间必须是有效数字"
    if not math.isfinite(value) or value <= 0:
        return False, "充电时间必须大于0"
    return True, ""
