import numpy as np
from scipy.spatial.transform import Rotation


def Rt_to_T(R: np.ndarray, t: np.ndarray) -> np.ndarray:
    T = np.eye(4)
    T[:3,:3] = R
    T[:3, 3] = t.reshape(3)
    return T

def Rt_to_E(R: np.ndarray, t: np.ndarray) -> np.ndarray:
    """3x4 extrinsic [R|t] (world -> camera)."""
    return np.hstack([np.asarray(R, np.float64), np.asarray(t, np.float64).reshape(3, 1)])

def E_to_Rt(E: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    E = np.asarray(E, dtype=np.float64)
    if E.shape not in ((3, 4), (4, 4)):
        raise ValueError(f"Unexpected extrinsic shape: {E.shape}")
    return E[:3, :3].copy(), E[:3, 3].copy()

def inv_T(T: np.ndarray) -> np.ndarray:
    R = T[:3,:3]; t = T[:3,3]
    Ti = np.eye(4)
    Ti[:3,:3] = R.T
    Ti[:3, 3] = -R.T @ t
    return Ti

def orthonormalize(R: np.ndarray) -> np.ndarray:
    # closest rotation in Frobenius norm
    U, _, Vt = np.linalg.svd(np.asarray(R, dtype=np.float64))
    D = np.diag([1.0, 1.0, np.sign(np.linalg.det(U @ Vt))])
    return U @ D @ Vt

def orthonormality_error(R: np.ndarray) -> float:
    R = np.asarray(R, dtype=np.float64)
    return float(np.linalg.norm(R.T @ R - np.eye(3)))

def rotation_angle(R: np.ndarray) -> float:
    """Geodesic angle (rad) of a rotation matrix."""
    return float(np.linalg.norm(Rotation.from_matrix(orthonormalize(R)).as_rotvec()))

def R_to_quat_xyzw(R: np.ndarray) -> np.ndarray:
    return Rotation.from_matrix(orthonormalize(R)).as_quat()
