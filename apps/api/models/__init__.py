"""Models package."""

from .user import User
from .workspace import Workspace
from .workspace_member import WorkspaceMember
from .workspace_invitation import WorkspaceInvitation
from .coin_transaction import CoinTransaction
from .automation import Automation
from .notification import Notification
from .subscription import Subscription
from .project import Project
from .task import Task
from .ai_message import AIMessage
from .chat_message import ChatMessage
