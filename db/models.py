from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, UniqueConstraint, CheckConstraint, Text, BigInteger, Enum, Index, text
from sqlalchemy.orm import relationship, DeclarativeBase
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.sql import func
import enum


class Base(AsyncAttrs, DeclarativeBase):
    pass


class CycleStatus(enum.Enum):
    """Статус цикла ротации"""
    upcoming = "upcoming"  # Каталог подготовлен, еще не запущен
    active = "active"      # Текущий цикл (не более одного)
    archived = "archived"  # Завершенный цикл


class LedgerCategory(enum.Enum):
    """Категория строки инвентаря"""
    rotm = "rotm"  # Основное предложение цикла для трека
    swap = "swap"  # Дополнительная позиция, доступная только для обмена


class Track(Base):
    """
    Трек (категория), выбираемый подписчиком.

    value: каноническое значение (например, 'hiphop')
    label: отображаемое название
    is_active: доступен ли трек для выбора
    """
    __tablename__ = "tracks"

    id = Column(Integer, primary_key=True, autoincrement=True)
    value = Column(String(64), nullable=False, unique=True, index=True)
    label = Column(String(128), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    ledger_rows = relationship("RotationCycleProduct", back_populates="track")

    def __repr__(self):
        return f"<Track(id={self.id}, value='{self.value}', active={self.is_active})>"


class RotationCycle(Base):
    """
    Месячный цикл ротации каталога.

    swap_window_opens_at / swap_window_closes_at: границы окна обмена.
    Окно обмена вычисляется из границ и текущего времени и нигде не хранится.
    """
    __tablename__ = "rotation_cycles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(64), nullable=False)
    status = Column(Enum(CycleStatus, name="rotation_cycle_status"),
                    nullable=False,
                    default=CycleStatus.upcoming,
                    index=True)
    swap_window_opens_at = Column(DateTime(timezone=True), nullable=True)
    swap_window_closes_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    products = relationship("RotationCycleProduct", back_populates="cycle")

    __table_args__ = (
        # At most one active cycle
        Index(
            "uq_rotation_cycles_single_active",
            "status",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
    )

    def __repr__(self):
        return f"<RotationCycle(id={self.id}, name='{self.name}', status={self.status})>"


class RotationCycleProduct(Base):
    """
    Строка инвентаря цикла: счетчики по (cycle_id, product_id).

    existing_sub_qty: пул для действующих подписчиков
    new_sub_qty: пул для новых подписчиков
    swap_qty: пул для обменов
    *_variant_ref: ID вариантов товара в витрине для каждого пула
    is_active: строки никогда не удаляются, только выводятся из оборота
    """
    __tablename__ = "rotation_cycle_products"

    id = Column(Integer, primary_key=True, autoincrement=True)
    cycle_id = Column(Integer,
                      ForeignKey("rotation_cycles.id"),
                      nullable=False,
                      index=True)
    product_id = Column(BigInteger, nullable=False, index=True)
    track_id = Column(Integer, ForeignKey("tracks.id"), nullable=True)
    category = Column(Enum(LedgerCategory, name="ledger_category"),
                      nullable=False,
                      default=LedgerCategory.rotm)
    existing_sub_qty = Column(Integer, nullable=False, default=0)
    new_sub_qty = Column(Integer, nullable=False, default=0)
    swap_qty = Column(Integer, nullable=False, default=0)
    swap_variant_ref = Column(BigInteger, nullable=True, index=True)
    newsub_variant_ref = Column(BigInteger, nullable=True)
    existingsub_variant_ref = Column(BigInteger, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    updated_at = Column(DateTime(timezone=True),
                        server_default=func.now(),
                        onupdate=func.now())

    cycle = relationship("RotationCycle", back_populates="products")
    track = relationship("Track", back_populates="ledger_rows")

    __table_args__ = (
        UniqueConstraint("cycle_id", "product_id", name="uq_cycle_product"),
        CheckConstraint("existing_sub_qty >= 0", name="ck_existing_sub_qty_non_negative"),
        CheckConstraint("new_sub_qty >= 0", name="ck_new_sub_qty_non_negative"),
        CheckConstraint("swap_qty >= 0", name="ck_swap_qty_non_negative"),
    )

    def __repr__(self):
        return (
            f"<RotationCycleProduct(cycle={self.cycle_id}, product={self.product_id}, "
            f"existing={self.existing_sub_qty}, new={self.new_sub_qty}, swap={self.swap_qty})>"
        )


class SwapFeedback(Base):
    """Отзыв подписчика об обменах за месяц (один на email в месяц)."""
    __tablename__ = "swaps_feedback"

    id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(255), nullable=False, index=True)
    first_name = Column(String(128), nullable=True)
    last_name = Column(String(128), nullable=True)
    storefront_customer_id = Column(BigInteger, nullable=True)
    billing_customer_id = Column(String(64), nullable=True)
    rating = Column(Integer, nullable=False)
    text = Column(Text, nullable=True)
    month = Column(String(2), nullable=False)
    month_name = Column(String(16), nullable=False)
    year = Column(String(4), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        UniqueConstraint("email", "month", "year", name="uq_swaps_feedback_email_period"),
    )
