from .enums import AccountingMode, StagingStatus, TradeSide
from .user import User
from .position import Position
from .transaction import Transaction
from .realized_pnl import RealizedPnlRecord
from .import_staging import StagingRecord
