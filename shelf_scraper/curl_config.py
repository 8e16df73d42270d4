"""Session headers and cookies from a browser "Copy as cURL" command."""
from __future__ import annotations

import shlex
from dataclasses import dataclass, field
from typing import Dict
from urllib.parse import urlsplit, urlunsplit

# Headers that describe the copied request rather than the session.
_SKIPPED_HEADERS = {"content-length", "host", "accept-encoding"}


@dataclass(frozen=True)
class CurlFields:
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    cookies: Dict[str, str] = field(default_factory=dict)

    @property
    def origin(self) -> str:
        parts = urlsplit(self.url)
        return urlunsplit((parts.scheme, parts.netloc, "", "", ""))


def parse_cookie_str(raw: str) -> Dict[str, str]:
    cookies: Dict[str, str] = {}
    for pair in raw.split(";"):
        part = pair.strip()
        if not part or "=" not in part:
            continue
        k, v = part.split("=", 1)
        cookies[k.strip()] = v.strip()
    return cookies


def parse_curl_to_fields(curl_cmd: str) -> CurlFields:
    tokens = shlex.split(curl_cmd.replace("\\\n", " "), posix=True)
    if not tokens or tokens[0] != "curl":
        raise ValueError("curl config must start with 'curl'.")

    raw_url = ""
    headers: Dict[str, str] = {}
    cookies: Dict[str, str] = {}

    i = 1
    while i < len(tokens):
        t = tokens[i]
        if t in ("-H", "--header") and i + 1 < len(tokens):
            hv = tokens[i + 1]
            if ":" in hv:
                k, v = hv.split(":", 1)
                name = k.strip()
                if name.lower() == "cookie":
                    cookies.update(parse_cookie_str(v.strip()))
                elif name.lower() not in _SKIPPED_HEADERS:
                    headers[name] = v.strip()
            i += 2
            continue
        if t in ("-b", "--cookie") and i + 1 < len(tokens):
            cookies.update(parse_cookie_str(tokens[i + 1].strip()))
            i += 2
            continue
        if t == "--url" and i + 1 < len(tokens):
            raw_url = tokens[i + 1]
            i += 2
            continue
        if t.startswith("http://") or t.startswith("https://"):
            raw_url = t
        i += 1

    if not raw_url:
        raise ValueError("No URL found in curl config.")

    return CurlFields(url=raw_url, headers=headers, cookies=cookies)


def load_curl_config(path: str) -> CurlFields:
    with open(path, "r", encoding="utf-8") as f:
        return parse_curl_to_fields(f.read().strip())
