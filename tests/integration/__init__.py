"""
集成测试（integration tests）

说明：
- 该目录下的测试会启动本地临时 HTTP server 充当下游处理服务，走真实的 HTTP POST。
- Drive change feed 使用内存替身，不依赖外网。
"""
