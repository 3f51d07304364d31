from .user import UserProfile
from .task import Task
from .time_log import TaskTimeLog
from .notification import Notification
from .post import Post

# додай тут всі свої моделі!
