"""
互动引擎异常定义

所有异常都继承自 EngagementError，在API边界统一转换为标准响应，不会导致进程崩溃
"""
from fastapi import status


class EngagementError(Exception):
    """互动引擎异常基类"""
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "互动服务内部错误"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class NotFoundError(EngagementError):
    """目标用户/视频/评论/通知不存在，不重试"""
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "目标不存在"


class SelfReferenceError(EngagementError):
    """不能关注自己，不重试"""
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "不能关注自己"


class PermissionDeniedError(EngagementError):
    """无权操作他人的资源"""
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "无权执行此操作"


class ValidationError(EngagementError):
    """请求参数合法但业务上不允许（例如视频关闭了评论）"""
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "请求参数无效"


class ConflictError(EngagementError):
    """并发切换导致状态与预期不符，引擎内部会重试，重试耗尽后才抛给调用方"""
    status_code = status.HTTP_409_CONFLICT
    default_message = "并发冲突，请稍后重试"


class StorageTimeoutError(EngagementError, TimeoutError):
    """存储调用超时，属于瞬时错误，调用方可安全重试整个请求"""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "存储服务响应超时，请稍后重试"
