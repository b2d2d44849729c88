# salesync/models/sale.py

from sqlalchemy import Column, Integer, String, Float, Text, DateTime, UniqueConstraint
from sqlalchemy.ext.hybrid import hybrid_property

from ..database import Base
from .platform_connection import utc_now


class Sale(Base):
    """Represents one marketplace transaction in the user's sales ledger."""

    __tablename__ = "sales"
    __table_args__ = (
        # Sole dedup key for imports. Manual entries leave external_id NULL.
        UniqueConstraint("user_id", "platform", "external_id", name="uq_sales_user_platform_external_id"),
    )

    id = Column(Integer, primary_key=True)

    created_at = Column(DateTime(timezone=True), default=utc_now, nullable=False)

    user_id = Column(String, index=True, nullable=False)
    platform = Column(String, index=True, nullable=False)
    external_id = Column(String, nullable=True)

    # Local listing this sale came from, when the user tracks one
    listing_id = Column(String, nullable=True)

    sale_price = Column(Float, nullable=False)
    shipping_cost = Column(Float, nullable=False, default=0.0)
    platform_fees = Column(Float, nullable=False, default=0.0)
    # Cost basis is entered by the user later; sync only ever writes the default
    cost = Column(Float, nullable=False, default=0.0)

    buyer_username = Column(String, nullable=True)
    sold_at = Column(DateTime(timezone=True), index=True, default=utc_now, nullable=False)

    item_title = Column(Text, nullable=True)
    item_image_url = Column(Text, nullable=True)

    @hybrid_property
    def profit(self) -> float:
        return round(
            (self.sale_price or 0.0)
            - (self.shipping_cost or 0.0)
            - (self.platform_fees or 0.0)
            - (self.cost or 0.0),
            2,
        )

    @profit.expression
    def profit(cls):
        return cls.sale_price - cls.shipping_cost - cls.platform_fees - cls.cost

    def __repr__(self) -> str:
        return (
            f"<Sale id={self.id} user={self.user_id} platform={self.platform} "
            f"external_id={self.external_id} price={self.sale_price}>"
        )
