"""
Transaction Classification Engine

Maps a free-text description to a category with a keyword score.

Scoring, per category of the requested direction:
- +1 for every keyword found in the description (case-insensitive)
- +3 when the description IS the category name
- +2 when the description CONTAINS the category name

The highest nonzero score wins; ties go to the category declared first.

DESIGN DECISION: Learning is explicit and bounded. learn() returns the
keywords it added and never grows a category past the configured cap, so
vocabulary drift can be inspected and cannot run away.
"""

from typing import Optional, Union
from uuid import uuid4

from pydantic import BaseModel, Field

from src.config import get_settings
from src.models.records import TransactionKind
from src.services.storage.interface import NotFoundError


class Category(BaseModel):
    """A classification target."""

    id: str
    name: str
    description: str = ""
    direction: TransactionKind
    keywords: list[str] = Field(default_factory=list)
    color: str = "#6b7280"


DEFAULT_CATEGORIES: tuple[Category, ...] = (
    # Income
    Category(
        id="servicos", name="Serviços", direction=TransactionKind.INCOME,
        description="Receitas de prestação de serviços", color="#10b981",
        keywords=["serviço", "consultoria", "projeto", "desenvolvimento", "design", "marketing"],
    ),
    Category(
        id="produtos", name="Produtos", direction=TransactionKind.INCOME,
        description="Vendas de produtos", color="#3b82f6",
        keywords=["produto", "venda", "ecommerce", "loja", "mercadoria"],
    ),
    Category(
        id="freelance", name="Freelance", direction=TransactionKind.INCOME,
        description="Trabalhos freelancer", color="#8b5cf6",
        keywords=["freelance", "freelancer", "trabalho", "job", "projeto"],
    ),
    Category(
        id="investimentos", name="Investimentos", direction=TransactionKind.INCOME,
        description="Rendimentos de investimentos", color="#f59e0b",
        keywords=["investimento", "dividendo", "rendimento", "juros", "aplicação"],
    ),
    # Expense
    Category(
        id="alimentacao", name="Alimentação", direction=TransactionKind.EXPENSE,
        description="Gastos com alimentação", color="#ef4444",
        keywords=["comida", "restaurante", "supermercado", "alimentação", "lanche", "café"],
    ),
    Category(
        id="transporte", name="Transporte", direction=TransactionKind.EXPENSE,
        description="Gastos com transporte", color="#f97316",
        keywords=["uber", "99", "taxi", "ônibus", "metrô", "combustível", "gasolina"],
    ),
    Category(
        id="moradia", name="Moradia", direction=TransactionKind.EXPENSE,
        description="Gastos com moradia", color="#06b6d4",
        keywords=["aluguel", "condomínio", "energia", "água", "internet", "moradia"],
    ),
    Category(
        id="saude", name="Saúde", direction=TransactionKind.EXPENSE,
        description="Gastos com saúde", color="#ec4899",
        keywords=["médico", "farmácia", "consulta", "exame", "saúde", "hospital"],
    ),
    Category(
        id="educacao", name="Educação", direction=TransactionKind.EXPENSE,
        description="Gastos com educação", color="#84cc16",
        keywords=["curso", "faculdade", "universidade", "livro", "educação", "estudo"],
    ),
    Category(
        id="lazer", name="Lazer", direction=TransactionKind.EXPENSE,
        description="Gastos com lazer e entretenimento", color="#a855f7",
        keywords=["cinema", "teatro", "show", "viagem", "lazer", "entretenimento"],
    ),
    Category(
        id="tecnologia", name="Tecnologia", direction=TransactionKind.EXPENSE,
        description="Gastos com tecnologia", color="#6366f1",
        keywords=["computador", "celular", "software", "app", "tecnologia", "equipamento"],
    ),
)


def score_category(description: str, category: Category) -> int:
    """Classification score of one category for a description."""
    text = description.lower()
    name = category.name.lower()

    score = sum(1 for keyword in category.keywords if keyword.lower() in text)
    if text == name:
        score += 3
    if name in text:
        score += 2
    return score


def _as_direction(direction: Union[TransactionKind, str]) -> Optional[TransactionKind]:
    try:
        return TransactionKind(direction)
    except ValueError:
        return None


class CategoryClassifier:
    """
    Keyword classifier over a mutable, ordered category list.

    classify() and suggest() are total: bad input yields None or [].
    """

    def __init__(
        self,
        categories: Optional[list[Category]] = None,
        max_keywords_per_category: Optional[int] = None,
        tokens_per_learn: Optional[int] = None,
    ):
        settings = get_settings().engine
        source = DEFAULT_CATEGORIES if categories is None else categories
        self._categories: list[Category] = [c.model_copy(deep=True) for c in source]
        self._max_keywords = max_keywords_per_category or settings.max_keywords_per_category
        self._tokens_per_learn = tokens_per_learn or settings.learn_tokens_per_call

    @property
    def categories(self) -> list[Category]:
        return list(self._categories)

    def _ranked(
        self,
        description: Optional[str],
        direction: Union[TransactionKind, str],
    ) -> list[tuple[Category, int]]:
        kind = _as_direction(direction)
        if kind is None or not isinstance(description, str):
            return []

        scored = [
            (category, score_category(description, category))
            for category in self._categories
            if category.direction == kind
        ]
        # sorted() is stable: equal scores keep declaration order
        ranked = sorted(scored, key=lambda pair: pair[1], reverse=True)
        return [(c, s) for c, s in ranked if s > 0]

    def classify(
        self,
        description: Optional[str],
        direction: Union[TransactionKind, str],
    ) -> Optional[Category]:
        """Best category for the description, or None when nothing scores."""
        ranked = self._ranked(description, direction)
        return ranked[0][0] if ranked else None

    def suggest(
        self,
        description: Optional[str],
        direction: Union[TransactionKind, str],
        limit: int = 3,
    ) -> list[Category]:
        """Up to `limit` scoring categories, best first."""
        return [c for c, _ in self._ranked(description, direction)[:limit]]

    def learn(self, description: str, category_id: str) -> list[str]:
        """
        Add unseen words of a description to a category's keywords.

        Words longer than two characters that are not already keywords are
        candidates; at most tokens_per_learn are added per call and the
        category never exceeds max_keywords_per_category.

        Returns:
            The keywords actually added (possibly empty)

        Raises:
            NotFoundError: Unknown category id
        """
        category = self.get_category(category_id)
        if category is None:
            raise NotFoundError(f"Category not found: {category_id}")

        known = {k.lower() for k in category.keywords}
        candidates = []
        for token in description.lower().split():
            if len(token) > 2 and token not in known and token not in candidates:
                candidates.append(token)

        room = max(0, self._max_keywords - len(category.keywords))
        added = candidates[:min(self._tokens_per_learn, room)]
        if added:
            self._replace(category.model_copy(
                update={"keywords": [*category.keywords, *added]}
            ))
        return added

    # -------------------------------------------------------------------------
    # Category management
    # -------------------------------------------------------------------------

    def get_category(self, category_id: str) -> Optional[Category]:
        return next((c for c in self._categories if c.id == category_id), None)

    def categories_for(self, direction: Union[TransactionKind, str]) -> list[Category]:
        kind = _as_direction(direction)
        return [c for c in self._categories if c.direction == kind]

    def add_category(
        self,
        name: str,
        direction: Union[TransactionKind, str],
        keywords: Optional[list[str]] = None,
        description: str = "",
        color: str = "#6b7280",
    ) -> Category:
        """Append a new category; it loses ties to every existing one."""
        category = Category(
            id=str(uuid4()),
            name=name,
            description=description,
            direction=TransactionKind(direction),
            keywords=list(keywords or [])[:self._max_keywords],
            color=color,
        )
        self._categories.append(category)
        return category

    def update_category(self, category_id: str, **changes) -> Category:
        category = self.get_category(category_id)
        if category is None:
            raise NotFoundError(f"Category not found: {category_id}")
        changes.pop("id", None)
        if "keywords" in changes:
            changes["keywords"] = list(changes["keywords"])[:self._max_keywords]
        updated = Category.model_validate({**category.model_dump(), **changes})
        self._replace(updated)
        return updated

    def remove_category(self, category_id: str) -> None:
        if self.get_category(category_id) is None:
            raise NotFoundError(f"Category not found: {category_id}")
        self._categories = [c for c in self._categories if c.id != category_id]

    def _replace(self, category: Category) -> None:
        self._categories = [
            category if c.id == category.id else c for c in self._categories
        ]
