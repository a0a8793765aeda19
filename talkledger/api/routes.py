from fastapi import APIRouter, HTTPException
from fastapi.responses import StreamingResponse
from loguru import logger

from talkledger import background
from talkledger.deps import chat, pipeline, repo
from talkledger.errors import StoreFailure, ValidationFailure
from talkledger.models.schemas import (
    BatchRequest,
    BatchSummary,
    ChatReply,
    ChatRequest,
    CreateTransactionRequest,
    MessageEvent,
    ParsedIntent,
    ParseRequest,
    PostbackEvent,
    Reply,
)

router = APIRouter()


def _unavailable(e: StoreFailure) -> HTTPException:
    logger.error("Store unavailable: {}", e)
    return HTTPException(status_code=503, detail="Ledger store unavailable")


@router.get("/health")
def health():
    return {"status": "ok", "background_failures": dict(background.failures)}


@router.post("/events/message", response_model=Reply)
async def message_event(event: MessageEvent):
    return await pipeline.handle_message(event.user_id, event.text)


@router.post("/events/postback", response_model=Reply)
async def postback_event(event: PostbackEvent):
    return await pipeline.handle_postback(event.user_id, event.data)


@router.post("/batch", response_model=BatchSummary)
async def batch(request: BatchRequest):
    try:
        return await pipeline.handle_batch(request.user_id, request.text)
    except StoreFailure as e:
        raise _unavailable(e)


@router.post("/parse", response_model=ParsedIntent)
async def parse_message(request: ParseRequest, user_id: str = "web"):
    logger.info("Parsing message: {}", request.message)
    try:
        return await pipeline.parse_intent(user_id, request.message)
    except StoreFailure as e:
        raise _unavailable(e)


@router.post("/chat", response_model=ChatReply)
async def chat_reply(request: ChatRequest):
    try:
        return await chat.reply(request.user_id, request.messages)
    except StoreFailure as e:
        raise _unavailable(e)


@router.post("/chat/stream")
async def chat_stream(request: ChatRequest):
    # Starlette closes the generator on disconnect, which closes the upstream stream
    return StreamingResponse(
        chat.stream(request.user_id, request.messages),
        media_type="text/plain; charset=utf-8",
    )


@router.post("/transactions")
async def create_transaction(request: CreateTransactionRequest):
    try:
        saved = await pipeline.submit_form(request)
    except ValidationFailure as e:
        raise HTTPException(status_code=422, detail={"field": e.field, "message": str(e)})
    except StoreFailure as e:
        raise _unavailable(e)
    if saved is None:
        return {"ok": True, "skipped": True}
    logger.info("Created transaction {} for {}", saved.id, request.user_id)
    return {"ok": True, "transaction": saved}


@router.get("/transactions")
async def list_transactions(user_id: str):
    try:
        return await repo.get_transactions(user_id)
    except StoreFailure as e:
        raise _unavailable(e)
