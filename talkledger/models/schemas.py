from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

TxType = Literal["income", "expense"]
DialogKind = Literal["add_tx", "add_note", "add_reminder", "edit_tx", "ai_confirm", "admin"]
Priority = Literal["low", "medium", "high"]


class ParsedIntent(BaseModel):
    type: TxType | None = None
    amount: float | None = None
    currency: str | None = None
    rate: float | None = None
    date: str | None = None
    category_name: str | None = None
    claim_amount: float | None = None
    claimed: bool | None = None
    note: str = ""
    motivation: str | None = None
    emotion: str | None = None
    amount_source: Literal["local", "ai"] | None = None

    @property
    def actionable(self) -> bool:
        return self.amount is not None and self.amount > 0


class Category(BaseModel):
    id: str
    name: str


class Transaction(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    id: str | None = None
    date: str
    type: TxType = "expense"
    category_id: str = Field(min_length=1)
    currency: str = "TWD"
    rate: float = 1.0
    amount: float = Field(gt=0)
    claim_amount: float = Field(default=0, ge=0)
    claimed: bool = False
    note: str = ""
    created_at: datetime = Field(default_factory=datetime.now)

    @field_validator("currency")
    @classmethod
    def _upper_currency(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("date")
    @classmethod
    def _iso_date(cls, v: str) -> str:
        # Raises ValueError for anything that is not a real calendar date
        datetime.strptime(v, "%Y-%m-%d")
        return v


class Note(BaseModel):
    id: str | None = None
    title: str = ""
    content: str = Field(min_length=1)
    tags: list[str] = []
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class Reminder(BaseModel):
    id: str | None = None
    title: str = Field(min_length=1)
    due_at: datetime | None = None
    priority: Priority = "medium"
    note: str = ""
    done: bool = False
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class LedgerSettings(BaseModel):
    base_currency: str = "TWD"
    monthly_budget: float = 0
    savings_goal: float = 0
    nudges: bool = True
    category_budgets: dict[str, float] = {}


class Embedding(BaseModel):
    model: str
    vector: list[float]


class DialogState(BaseModel):
    user_id: str
    kind: DialogKind
    step: str
    draft: dict[str, Any] = {}
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)


class PendingAiAction(BaseModel):
    action_id: str
    user_id: str
    kind: Literal["add_tx", "delete_tx"]
    payload: dict[str, Any] = {}
    created_at: datetime = Field(default_factory=datetime.now)


class Button(BaseModel):
    label: str
    data: str


class Reply(BaseModel):
    """Channel-neutral bot response: text plus rows of postback buttons."""

    text: str
    buttons: list[list[Button]] = []


class BatchSummary(BaseModel):
    added: int = 0
    skipped: int = 0
    failed: int = 0
    error: str | None = None
    lines: list[str] = []

    def render(self) -> str:
        text = f"Batch done: {self.added} added, {self.skipped} skipped (duplicate), {self.failed} not understood."
        if self.error:
            text += f"\nStopped early: {self.error}"
        return text


class ChatReply(BaseModel):
    text: str
    provider: Literal["openai", "heuristic"]
    tools_used: list[str] = []


# ── API request bodies ───────────────────────────────────────────────


class MessageEvent(BaseModel):
    user_id: str
    text: str


class PostbackEvent(BaseModel):
    user_id: str
    data: str | dict[str, str]


class BatchRequest(BaseModel):
    user_id: str
    text: str


class ParseRequest(BaseModel):
    message: str


class ChatMessage(BaseModel):
    role: Literal["user", "assistant", "system"]
    content: str


class ChatRequest(BaseModel):
    user_id: str
    messages: list[ChatMessage]


class CreateTransactionRequest(BaseModel):
    user_id: str
    date: str
    type: TxType = "expense"
    category_id: str
    currency: str = "TWD"
    rate: float = 1.0
    amount: float
    claim_amount: float = 0
    claimed: bool = False
    note: str = ""
