def chunked(*chunks, pulled=None):
    """An async byte stream delivering exactly the given chunks, counting each pull."""
    async def _gen():
        for chunk in chunks:
            if pulled is not None:
                pulled.append(chunk)
            yield chunk
    return _gen()
