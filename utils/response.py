from flask import jsonify


def success_response(data=None, message="操作成功", code=200):
    """成功响应"""
    response = {
        'code': code,
        'message': message,
        'success': True
    }
    if data is not None:
        response['data'] = data
    return jsonify(response), code


def error_response(message="操作失败", code=400, error_type="OPERATION_FAILED"):
    """错误响应"""
    return jsonify({
        'code': code,
        'message': message,
        'success': False,
        'error_type': error_type
    }), code


def validation_error_response(errors, message="缺少必要參數"):
    """数据验证错误响应"""
    return jsonify({
        'code': 400,
        'message': message,
        'success': False,
        'error_type': 'INVALID_ARGUMENT',
        'errors': errors
    }), 400


def scheduler_error_response(exc):
    """调度引擎异常 -> 错误响应"""
    return error_response(exc.message or str(exc), code=exc.code, error_type=exc.error_type)
