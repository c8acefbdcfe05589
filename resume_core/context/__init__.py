"""上下文构建：把保存的对话/空间展平为 ResumeContext。"""
