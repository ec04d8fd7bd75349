"""ClawGate Core -- 共享领域模型、配置、异常与存储"""
