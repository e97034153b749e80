from .user import User
from .video import Video
from .comment import Comment
from .follow import Follow
from .like import Like
from .notification import Notification
from .view_history import ViewHistory

__all__ = [
    "User",
    "Video",
    "Comment",
    "Follow",
    "Like",
    "Notification",
    "ViewHistory"
]
