import contextvars

# 当前正在处理的入站事件的 trace id
trace_id_var = contextvars.ContextVar("trace_id", default="-")
