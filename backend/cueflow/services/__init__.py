"""
Services Layer

Match game-flow logic that:
- Works on validated Match documents and immutable local state
- Never raises for rejected game actions; rejections surface as `error`
- Does NOT depend on HTTP request/response objects
- Writes to the shared record only through the match store
"""
