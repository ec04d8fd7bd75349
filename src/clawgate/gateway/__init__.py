"""ClawGate Gateway -- 授权网关 HTTP 表面"""
