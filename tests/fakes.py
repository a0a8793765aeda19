from talkledger.llm.client import Completion


class FakeCompletionClient:
    """Scripted stand-in for CompletionClient.

    `replies` are consumed in order by complete(): a str becomes the reply text,
    a Completion is returned as is, an exception is raised. `streams` maps a
    model to its chunks, where an exception item is raised at that point.
    """

    def __init__(self, replies=None, streams=None, available=True):
        self.replies = list(replies or [])
        self.streams = dict(streams or {})
        self.available = available
        self.calls: list[dict] = []
        self.closed: list[str] = []

    async def complete(self, model, messages, tools=None, json_mode=False):
        self.calls.append({"model": model, "messages": messages, "tools": tools, "json_mode": json_mode})
        if not self.replies:
            raise RuntimeError("no scripted reply left")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, str):
            return Completion(text=reply)
        return reply

    async def stream(self, model, messages):
        self.calls.append({"model": model, "messages": messages, "stream": True})
        try:
            for item in self.streams.get(model, []):
                if isinstance(item, Exception):
                    raise item
                yield item
        finally:
            self.closed.append(model)
