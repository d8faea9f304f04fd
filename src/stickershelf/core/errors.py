class MalformedManifestError(Exception):
    """表情包描述文件无法解析或缺少必填字段。"""

    def __init__(self, location: str, reason: str) -> None:
        super().__init__(f"{location}: {reason}")
        self.location = location
        self.reason = reason


class AssetNotFoundError(Exception):
    """请求的贴纸文件不在对账后的表情包视图中。"""


class UnsupportedMediaError(Exception):
    """托盘图标渲染失败。"""


class HostNotificationError(Exception):
    """宿主拒绝或无法接收变更通知。"""
