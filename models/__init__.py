from .profile import Profile  # noqa: F401
from .prompt_history import PromptHistoryEntry  # noqa: F401
from .payments import PaymentRecord  # noqa: F401
