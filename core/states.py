from enum import Enum


class VideoJobStatus(str, Enum):
    CREATED = "created"         # 行已存在，尚无执行方接手
    PROCESSING = "processing"   # 已分配执行方，直到完成或执行方重试
    COMPLETED = "completed"     # 终态


# 状态流转规则
VALID_TRANSITIONS = {
    VideoJobStatus.CREATED: {VideoJobStatus.PROCESSING, VideoJobStatus.COMPLETED},
    VideoJobStatus.PROCESSING: {VideoJobStatus.PROCESSING, VideoJobStatus.COMPLETED},  # 重入即执行方重试
    VideoJobStatus.COMPLETED: set(),
}


def validate_transition(current: str, new: str) -> bool:
    """
    验证任务状态流转是否合法

    Args:
        current: 当前状态
        new: 目标状态

    Returns:
        bool: 是否允许流转
    """
    try:
        current_status = VideoJobStatus(current)
        new_status = VideoJobStatus(new)
    except ValueError:
        return False
    return new_status in VALID_TRANSITIONS[current_status]
