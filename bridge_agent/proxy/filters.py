"""NO_PROXY 主机规则匹配"""
import os
from typing import Iterable, List, Optional


def parse_rule_list(raw: Optional[str]) -> List[str]:
    """解析逗号分隔的规则列表（如 NO_PROXY 环境变量）"""
    return [s.strip() for s in str(raw or "").split(",") if s.strip()]


def host_matches_rule(host: str, rule: str) -> bool:
    """判断主机是否命中单条规则。

    规则形态:
    - "*"            匹配所有主机
    - "example.com"  与主机完全相同
    - ".example.com" 主机为 example.com 或以 .example.com 结尾
    """
    h = str(host or "").strip().lower()
    r = str(rule or "").strip().lower()
    if not r:
        return False
    if r == "*":
        return True
    if r == h:
        return True
    if r.startswith(".") and (h == r[1:] or h.endswith(r)):
        return True
    return False


def match_no_proxy(host: str, rules: Optional[Iterable[str]]) -> bool:
    """主机是否命中规则列表中的任意一条"""
    for rule in rules or []:
        if host_matches_rule(host, rule):
            return True
    return False


def env_no_proxy_rules(environ=None) -> List[str]:
    """读取环境变量 NO_PROXY / no_proxy"""
    env = os.environ if environ is None else environ
    return parse_rule_list(env.get("NO_PROXY") or env.get("no_proxy") or "")
