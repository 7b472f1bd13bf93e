from flask_sqlalchemy import SQLAlchemy

from .services.stock_prices.interfaces import utc_now

db = SQLAlchemy()


class Stock(db.Model):
    __tablename__ = 'stocks'

    id = db.Column(db.Integer, primary_key=True)
    symbol = db.Column(db.String(20), nullable=False, index=True)
    company_name = db.Column(db.String(200), nullable=True)
    quantity = db.Column(db.Float, nullable=False, default=0)
    purchase_price = db.Column(db.Float, nullable=True)
    current_price = db.Column(db.Float, nullable=True)
    last_updated = db.Column(db.DateTime(timezone=True), nullable=True)
    family_member_id = db.Column(db.Integer, nullable=True, index=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utc_now)

    def to_dict(self):
        return {
            'id': self.id,
            'symbol': self.symbol,
            'companyName': self.company_name,
            'quantity': self.quantity,
            'purchasePrice': self.purchase_price,
            'currentPrice': self.current_price,
            'lastUpdated': self.last_updated.isoformat() if self.last_updated else None,
            'familyMemberId': self.family_member_id,
            'createdAt': self.created_at.isoformat() if self.created_at else None,
        }


# Repository helpers used by the price pipeline

def get_distinct_symbols():
    """Every distinct symbol held across all stock rows."""
    rows = db.session.query(Stock.symbol).distinct().order_by(Stock.symbol).all()
    return [row[0] for row in rows if row[0]]


def get_stocks_by_symbols(symbols):
    """Stock rows for the given symbols."""
    if not symbols:
        return []
    return Stock.query.filter(Stock.symbol.in_(list(symbols))).all()


def update_stock_price(stock_id, price, commit=True):
    """Set current_price and last_updated for one stock row."""
    stock = db.session.get(Stock, stock_id)
    if stock is None:
        raise LookupError(f"Stock {stock_id} not found")
    stock.current_price = price
    stock.last_updated = utc_now()
    if commit:
        _commit()
    return stock


def update_stocks_price(stock_ids, price):
    """Write one price to several rows in a single transaction. Returns the rows updated."""
    updated = 0
    try:
        for stock_id in stock_ids:
            update_stock_price(stock_id, price, commit=False)
            updated += 1
    except Exception:
        db.session.rollback()
        raise
    if updated:
        _commit()
    return updated


def update_symbol_price(symbol, price):
    """Write a price to every row holding symbol. Returns the rows updated."""
    return update_stocks_price([stock.id for stock in get_stocks_by_symbols([symbol])], price)


def _commit():
    try:
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
