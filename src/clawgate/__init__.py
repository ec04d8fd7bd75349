"""ClawGate -- 自主 Agent 动作授权网关

Owner Guard -> Injection Filter -> Draft Enforcer -> Dual-Confirmation Gate
"""

__version__ = "0.1.0"
