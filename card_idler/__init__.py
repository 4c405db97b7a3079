"""
Card Idler - держит в idle игры Steam, по которым ещё выпадают карточки.
"""

__version__ = "1.0.0"
