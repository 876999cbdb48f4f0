"""领域层模型与协议。

包含：
- models: 统一的 Message / MessagePart 模型与 ID 生成。
- conversation: 会话与整体状态快照 ChatState。
- accumulator: 把流式增量折叠进会话的纯函数 reducer。
- exceptions: 业务异常类型定义。
"""
