import glfw


def monitor_at_position(position):
    "The glfw monitor whose desktop area contains position (x, y), or None."
    x, y = position
    for monitor in glfw.get_monitors():
        mx, my = glfw.get_monitor_pos(monitor)
        mode   = glfw.get_video_mode(monitor)
        if mx <= x < mx + mode.size.width and my <= y < my + mode.size.height:
            return monitor
    return None

def rift_position_and_size(hmd_info):
    """Find the HMD's display from where the profile says it sits on the desktop.

    Returns ((x, y), (width, height)) for a window covering it.
    Initializes glfw if that hasn't been done yet.
    """
    if not glfw.init():
        raise Exception("GLFW init failed")

    position = (hmd_info.desktop_x, hmd_info.desktop_y)
    monitor  = monitor_at_position(position)
    if monitor is None:
        raise RuntimeError("Unable to find Rift display")

    mode = glfw.get_video_mode(monitor)
    return position, (mode.size.width, mode.size.height)
