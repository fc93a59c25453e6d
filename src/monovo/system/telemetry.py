class Telemetry:
    def __init__(self):
        self.frames = []
        self.transitions = []

    def log_frame(self, idx: int, rec: dict):
        rec["frame_idx"] = idx
        self.frames.append(rec)

    def log_transition(self, idx: int, src: str, dst: str):
        self.transitions.append({"frame_idx": idx, "from": src, "to": dst})
