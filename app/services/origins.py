"""
app.services.origins
~~~~~~~~~~~~~~~~~~~~

邀请链接的对外地址推断。

优先级:
  1. ``PUBLIC_BASE_URL`` 配置
  2. 请求自身的来源（请求不是从本机回环地址发来时）
  3. 本机局域网 IPv4 地址（请求来自 localhost 时，方便同一局域网内的对方打开）
"""
from __future__ import annotations

import ipaddress
import socket
from collections.abc import Callable

_LOOPBACK_HOSTS: tuple[str, ...] = ("localhost", "127.0.0.1", "[::1]")


def lan_ip_address() -> str | None:
    """返回本机的一个局域网 IPv4 地址，私有地址优先。"""
    try:
        infos = socket.getaddrinfo(socket.gethostname(), None, socket.AF_INET)
    except OSError:
        return None

    fallback: list[str] = []
    for info in infos:
        ip = str(info[4][0])
        address = ipaddress.ip_address(ip)
        if address.is_loopback:
            continue
        if address.is_private:
            return ip
        fallback.append(ip)
    return fallback[0] if fallback else None


def is_loopback_host(host: str) -> bool:
    return any(host.startswith(candidate) for candidate in _LOOPBACK_HOSTS)


def build_origins(
    local_origin: str,
    host: str,
    port: int,
    public_base_url: str | None = None,
    lan_lookup: Callable[[], str | None] = lan_ip_address,
) -> tuple[str, str]:
    """推断 ``(本机地址, 对外地址)``。

    Args:
        local_origin: 请求自身的 ``scheme://host[:port]``。
        host: 请求的 Host 头。
        port: 服务监听端口（局域网地址使用）。
        public_base_url: 显式配置的对外地址。
        lan_lookup: 局域网地址查询函数，测试中可替换。
    """
    local_origin = local_origin.rstrip("/")
    if public_base_url:
        return local_origin, public_base_url.rstrip("/")
    if not is_loopback_host(host):
        return local_origin, local_origin

    lan_ip = lan_lookup()
    if not lan_ip:
        return local_origin, local_origin
    return local_origin, f"http://{lan_ip}:{port}"
