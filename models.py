from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Index
from sqlalchemy.orm import relationship, declarative_base
from datetime import datetime

Base = declarative_base()


def utcnow():
    return datetime.utcnow()


class Category(Base):
    __tablename__ = 'category'
    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(255), unique=True, nullable=False)
    description = Column(Text, nullable=True)
    reviews = relationship('ReviewHistory', back_populates='category')


class ReviewHistory(Base):
    """One revision of a review. Rows sharing review_id are revisions of the
    same logical review; the newest created_at is the current one."""

    __tablename__ = 'review_history'
    __table_args__ = (
        Index('ix_review_history_review_id_created_at', 'review_id', 'created_at'),
        Index('ix_review_history_category_id', 'category_id'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    text = Column(Text, nullable=True)
    stars = Column(Integer, nullable=False)
    review_id = Column(String(255), nullable=False)
    tone = Column(String(255), nullable=True)
    sentiment = Column(String(255), nullable=True)
    category_id = Column(Integer, ForeignKey('category.id'), nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    category = relationship('Category', back_populates='reviews')

    @property
    def needs_enrichment(self) -> bool:
        return not self.tone or not self.sentiment


class AccessLog(Base):
    __tablename__ = 'access_log'
    id = Column(Integer, primary_key=True, autoincrement=True)
    text = Column(Text, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
