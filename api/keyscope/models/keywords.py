"""
Keyword performance records and the legacy category table.

One row per (keyword, upload_period, keyword type) observation:
  - the same keyword may appear several times inside a period (once per
    leaf sub-category export), reads deduplicate it
  - rows are never physically removed, re-uploads deactivate the previous
    generation (is_active = false)
  - scores keep their decimal text as imported
"""
from keyscope.models.base import *


class Category(Base):
    __tablename__ = "categories"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    parent_id = Column(Uuid(as_uuid=True), ForeignKey("categories.id"), nullable=True)
    name = Column(String, nullable=False)
    slug = Column(String, nullable=False, index=True)
    level = Column(Integer, nullable=False, default=0)  # 0=category, 1=sub 1, 2=sub 2
    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)

    parent = relationship("Category", remote_side="Category.id", backref="children")

    __table_args__ = (
        Index("idx_categories_parent", "parent_id"),
        Index("idx_categories_name", "name"),
    )


class KeywordRecord(Base):
    __tablename__ = "keywords"

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    keyword = Column(Text, nullable=False)

    # ─── Metrics ───
    search_volume = Column(Integer, nullable=False, default=0)
    product_click_score = Column(String(32), nullable=True)
    sku_sales_score = Column(String(32), nullable=True)  # "Opportunity score" in HPK files
    ctr_score = Column(String(32), nullable=True)
    ctor_score = Column(String(32), nullable=True)
    average_price = Column(String(32), nullable=True)
    available_products = Column(Integer, nullable=False, default=0)
    rank = Column(Integer, nullable=True)  # RK rows only

    # ─── Category labels as exported ───
    category_id = Column(Uuid(as_uuid=True), ForeignKey("categories.id"), nullable=True)
    category = Column(Text, nullable=True)
    sub_category_1 = Column(Text, nullable=True)
    sub_category_2 = Column(Text, nullable=True)

    # ─── Partition ───
    upload_period = Column(String(20), nullable=True)  # "2025-07", "2025-07-14", "20250714", "RK-202507"
    is_hpk = Column(Boolean, nullable=False, default=False)
    is_rk = Column(Boolean, nullable=False, default=False)
    is_active = Column(Boolean, nullable=False, default=True)
    start_date = Column(Date, nullable=True)
    end_date = Column(Date, nullable=True)

    created_at = Column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at = Column(DateTime(timezone=True), default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        CheckConstraint("NOT (is_hpk AND is_rk)", name="ck_keywords_single_type"),
        CheckConstraint(
            "sub_category_2 IS NULL OR sub_category_1 IS NOT NULL",
            name="ck_keywords_category_path",
        ),
        Index("idx_keywords_upload_period", "upload_period"),
        Index("idx_keywords_keyword", "keyword"),
        Index("idx_keywords_category", "category"),
        Index("idx_keywords_is_active", "is_active"),
        Index("idx_keywords_period_active", "upload_period", "is_active"),
        Index("idx_keywords_category_active", "category", "is_active"),
        Index("idx_keywords_partition", "upload_period", "is_hpk", "is_rk", "is_active"),
    )

    @property
    def keyword_type(self) -> str:
        if self.is_hpk:
            return "hpk"
        if self.is_rk:
            return "rk"
        return "regular"
