from fastapi import Request

_SINGLE_IP_HEADERS = (
    "x-real-ip",
    "cf-connecting-ip",
    "true-client-ip",
    "fly-client-ip",
)


def client_ip(request: Request) -> str:
    # left-most X-Forwarded-For entry is the original client
    xff = request.headers.get("x-forwarded-for")
    if xff:
        ip = xff.split(",")[0].strip()
        if ip:
            return ip

    for header in _SINGLE_IP_HEADERS:
        value = request.headers.get(header)
        if value:
            return value.strip()

    fwd = request.headers.get("forwarded")
    if fwd:
        for part in fwd.split(",")[0].split(";"):
            if "=" in part:
                k, v = part.split("=", 1)
                if k.strip().lower() == "for":
                    return v.strip().strip('"')

    if request.client and request.client.host:
        return request.client.host
    return "unknown"
