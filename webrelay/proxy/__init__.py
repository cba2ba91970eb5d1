"""
Proxy entry point and the request pipeline around the rewriter.

Example usage with curl:
    curl "http://localhost:8000/api/proxy?url=https%3A%2F%2Fexample.com%2F"
    curl "http://localhost:8000/api/proxy?url=https%3A%2F%2Fexample.com%2F&adBlock=false"
    curl "http://localhost:8000/api/proxy/link?url=https://example.com/&anonymous=true"
"""
