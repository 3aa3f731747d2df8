"""ORM model for per-product SBOM components supplied by the SBOM collaborator."""

from sqlalchemy import Column, DateTime, Integer, String, func

from correlator.models.base import Base


class ProductComponent(Base):
    """One declared component of a product's current SBOM."""

    __tablename__ = "product_components"

    id = Column(Integer, primary_key=True, autoincrement=True)
    product_id = Column(String(255), nullable=False, index=True)
    name = Column(String(1024), nullable=False)
    version = Column(String(255), nullable=False)
    ecosystem = Column(String(64), nullable=False)
    purl = Column(String(2048), nullable=True)
    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
    )
