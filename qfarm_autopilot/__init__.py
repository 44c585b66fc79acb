"""QQ 农场自动托管：网关协议引擎 + 自家/好友农场编排。"""
