"""
Stand-in for ffmpeg used by the tests.

    fake_ffmpeg.py <mode> <playlist> <segment_pattern>

The mode is the last path component of the RTSP URL; unknown modes behave
like a healthy feed.
"""

import sys
import time

SEGMENT_BYTES = b"\x47" * 188


def hang(seconds=60.0):
    deadline = time.time() + seconds
    while time.time() < deadline:
        time.sleep(0.1)


def fail(message, code):
    sys.stderr.write(message + "\n")
    sys.stderr.flush()
    time.sleep(0.2)
    sys.exit(code)


def write_playlist(path, segments):
    with open(path, "w") as f:
        f.write("#EXTM3U\n#EXT-X-VERSION:3\n#EXT-X-TARGETDURATION:2\n")
        for name in segments:
            f.write("#EXTINF:2.000000,\n%s\n" % name)


def main():
    mode, playlist, pattern = sys.argv[1:4]

    if mode == "auth":
        fail("[rtsp @ 0x55d4] method DESCRIBE failed: 401 Unauthorized", 1)
    elif mode == "unreachable":
        fail("[tcp @ 0x55d4] Connection to tcp://10.0.0.1:554 failed: Connection refused", 1)
    elif mode == "notfound":
        fail("[rtsp @ 0x55d4] method DESCRIBE failed: 404 Not Found", 1)
    elif mode == "invalid":
        fail("rtsp://host/invalid: Invalid data found when processing input", 1)
    elif mode == "crash":
        fail("Something unexpected happened", 3)
    elif mode == "clean":
        sys.exit(0)
    elif mode == "hang":
        hang()
    elif mode == "empty":
        write_playlist(playlist, [])
        hang()
    else:
        names = []
        for i in range(2):
            path = pattern % i
            with open(path, "wb") as f:
                f.write(SEGMENT_BYTES)
            names.append(path.rsplit("/", 1)[-1])
        write_playlist(playlist, names)
        sys.stderr.write("frame=   50 fps= 25 q=-1.0 size=N/A time=00:00:02.00 bitrate=N/A speed=1x\r")
        sys.stderr.flush()
        hang()


if __name__ == "__main__":
    main()
