"""
Generic data access over SQLModel tables.

One `Repository` per entity type, all sharing the same five operations.
Repositories never commit: the calling service decides where a transaction
ends so that one mutation maps to one commit.
"""

from typing import Any, Generic, TypeVar

from sqlmodel import Session, SQLModel, select

from . import models
from .errors import NotFound

ModelT = TypeVar("ModelT", bound=SQLModel)


class Repository(Generic[ModelT]):
    def __init__(self, model: type[ModelT], label: str | None = None):
        self.model = model
        self.label = label or model.__name__

    def create(self, session: Session, obj: ModelT) -> ModelT:
        session.add(obj)
        session.flush()
        return obj

    def get(self, session: Session, obj_id: int) -> ModelT | None:
        return session.get(self.model, obj_id)

    def get_or_404(self, session: Session, obj_id: int, tenant_id: int | None = None) -> ModelT:
        """Fetch by id; a row owned by another tenant counts as missing."""
        obj = session.get(self.model, obj_id)
        if obj is None or (tenant_id is not None and getattr(obj, "tenant_id", None) != tenant_id):
            raise NotFound(f"{self.label} not found")
        return obj

    def query(self, session: Session, *where: Any, order_by: Any = None) -> list[ModelT]:
        statement = select(self.model).where(*where)
        if order_by is not None:
            statement = statement.order_by(order_by)
        return list(session.exec(statement).all())

    def first(self, session: Session, *where: Any) -> ModelT | None:
        return session.exec(select(self.model).where(*where)).first()

    def update(self, session: Session, obj: ModelT, command: SQLModel) -> ModelT:
        for field, value in command.model_dump(exclude_unset=True).items():
            setattr(obj, field, value)
        if "updated_at" in self.model.model_fields:
            obj.updated_at = models.utcnow()
        session.add(obj)
        session.flush()
        return obj

    def delete(self, session: Session, obj: ModelT) -> None:
        session.delete(obj)
        session.flush()


tenants = Repository(models.Tenant, "Restaurant")
tables = Repository(models.RestaurantTable, "Table")
menu_categories = Repository(models.MenuCategory, "Menu category")
menu_items = Repository(models.MenuItem, "Menu item")
orders = Repository(models.Order, "Order")
order_items = Repository(models.OrderItem, "Order item")
aging_thresholds = Repository(models.AgingThreshold, "Aging threshold")
payment_configs = Repository(models.PaymentProviderConfig, "Payment configuration")
email_configs = Repository(models.EmailConfig, "Email configuration")
