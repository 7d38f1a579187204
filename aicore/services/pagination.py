from dataclasses import dataclass, field
from typing import Any, List, Optional

from aicore.config import get_settings


@dataclass
class Page:
    items: List[Any] = field(default_factory=list)
    total: int = 0
    page: int = 1
    per_page: int = 10

    @property
    def pages(self) -> int:
        if self.total == 0:
            return 0
        return (self.total + self.per_page - 1) // self.per_page


def paginate(query, page: int = 1, per_page: Optional[int] = None) -> Page:
    settings = get_settings()
    per_page = per_page or settings.default_page_size
    per_page = max(1, min(per_page, settings.max_page_size))
    page = max(1, page)

    total = query.order_by(None).count()
    items = query.offset((page - 1) * per_page).limit(per_page).all()
    return Page(items=items, total=total, page=page, per_page=per_page)
