# Kinematic model of the reference arm: Kinova Jaco2 6-DOF spherical wrist (j2s6s300)
import logging
from typing import Final

import numpy as np
import roboticstoolbox as rtb
from numpy.typing import NDArray
from roboticstoolbox import RevoluteDH

logger = logging.getLogger(__name__)

# -----------------------------
# Typing aliases
# -----------------------------
Vec6f = NDArray[np.float64]

# -----------------------------
# Geometry (m)
# -----------------------------
D1: Final[float] = 0.2755  # base to shoulder
D2: Final[float] = 0.4100  # upper arm length
D3: Final[float] = 0.2073  # forearm length
D4: Final[float] = 0.1038  # first wrist length
D5: Final[float] = 0.1038  # second wrist length
D6: Final[float] = 0.1600  # wrist to center of the hand
E2: Final[float] = 0.0098  # joint 3-4 lateral offset

JOINT_NAMES: Final[tuple[str, ...]] = tuple(f"j2s6s300_joint_{i}" for i in range(1, 7))
Joint_num: Final[int] = len(JOINT_NAMES)

# Home configuration (rad), driver angles applied to the model as-is
HOME_RAD: Final[Vec6f] = np.deg2rad(
    np.array([275.0, 167.5, 57.4, 240.8, 82.7, 75.7], dtype=np.float64)
)

# Classic DH, all joints unflipped; angles are model coordinates
_links = [
    RevoluteDH(d=D1, a=0.0, alpha=np.pi / 2, offset=0.0),
    RevoluteDH(d=0.0, a=D2, alpha=np.pi, offset=-np.pi / 2),
    RevoluteDH(d=-E2, a=0.0, alpha=np.pi / 2, offset=np.pi / 2),
    RevoluteDH(d=-(D3 + D4), a=0.0, alpha=np.pi / 2, offset=0.0),
    RevoluteDH(d=0.0, a=0.0, alpha=np.pi / 2, offset=-np.pi),
    RevoluteDH(d=-(D5 + D6), a=0.0, alpha=np.pi, offset=np.pi / 2),
]

robot = rtb.DHRobot(_links, name="j2s6s300", manufacturer="Kinova")
logger.debug("Loaded %s DH model with %d joints", robot.name, robot.n)


def fkine_matrix(q: Vec6f) -> NDArray[np.float64]:
    """4x4 base-to-hand transform at q (translation in meters)."""
    return np.asarray(robot.fkine(np.asarray(q, dtype=np.float64)).A, dtype=np.float64)


def jacobian(q: Vec6f) -> NDArray[np.float64]:
    """6x6 base-frame Jacobian at q, [linear; angular] rows."""
    return np.asarray(robot.jacob0(np.asarray(q, dtype=np.float64)), dtype=np.float64)
