import hashlib


def derive_stream_id(rtsp_url: str, quality: str, delete_segments: bool) -> str:
    """根据（源地址、画质、保留模式）生成流 ID

    相同的组合始终得到相同的 ID，重复启动同一个流会复用其目录并替换进程。

    Args:
        rtsp_url: 源地址
        quality: 画质预设名称
        delete_segments: 保留模式（True 为滚动窗口）

    Returns:
        32 位十六进制字符串
    """
    flag = "true" if delete_segments else "false"
    unique = f"{rtsp_url}_{quality}_{flag}"
    return hashlib.md5(unique.encode("utf-8")).hexdigest()
