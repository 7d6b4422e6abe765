from .counterparties import Customer, Supplier
from .payables import Payable
from .payments import Payment, PaymentEvent
from .loyalty import CoinWallet, CoinTransaction, LoyaltySettings
from .sequences import DocumentSequence

__all__ = [
    'Customer', 'Supplier',
    'Payable',
    'Payment', 'PaymentEvent',
    'CoinWallet', 'CoinTransaction', 'LoyaltySettings',
    'DocumentSequence',
]
