from .user import User
from .item import Item
from .rental import Rental, RentalEvent
from .wallet_transaction import WalletTransaction
from .deposit import Deposit
from .dispute import Dispute
from .commission_record import CommissionRecord
from .notification import Notification

__all__ = [
    "User",
    "Item",
    "Rental",
    "RentalEvent",
    "WalletTransaction",
    "Deposit",
    "Dispute",
    "CommissionRecord",
    "Notification",
]
