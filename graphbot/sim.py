"""Simulation capability and its MuJoCo implementation."""
import xml.etree.ElementTree as ET
from abc import ABC, abstractmethod
from dataclasses import dataclass, field

import mujoco as mj
import numpy as np
import numpy.typing as npt

from graphbot import config
from graphbot.builder import Robot, mjcf_values

IDENTITY_QUAT = [1.0, 0.0, 0.0, 0.0]


@dataclass
class Prop:
    shape: str = "box"
    density: float = 0.0 # 0 means static
    friction: float = config.FLOOR_FRICTION
    half_extents: list[float] = field(default_factory=lambda: list(config.FLOOR_HALF_EXTENTS))

    def to_mjcf(self, prefix: str, position, orientation) -> ET.Element:
        body = ET.Element("body", name=f"{prefix}body", pos=mjcf_values(position), quat=mjcf_values(orientation))
        if self.density > 0.0:
            ET.SubElement(body, "freejoint", name=f"{prefix}root")
        geom = ET.SubElement(
            body, "geom",
            name=f"{prefix}geom",
            type=self.shape,
            size=mjcf_values(self.half_extents),
            friction=mjcf_values([self.friction, 0.005, 0.0001]),
            rgba="0.8 0.8 0.8 1",
        )
        if self.density > 0.0:
            geom.set("density", mjcf_values([self.density]))
        return body


class Simulation(ABC):
    """Stateful physics world the optimizer drives.

    Orientations are quaternions (w, x, y, z). Velocities of links are
    6-vectors in world frame, angular part first.
    """

    @abstractmethod
    def add_robot(self, robot: Robot, position, orientation) -> int: ...

    @abstractmethod
    def add_prop(self, prop: Prop, position, orientation) -> int: ...

    @abstractmethod
    def step(self) -> None: ...

    @abstractmethod
    def save_state(self) -> None: ...

    @abstractmethod
    def restore_state(self) -> None: ...

    @abstractmethod
    def set_joint_target_positions(self, robot_idx: int, targets: npt.ArrayLike) -> None: ...

    @abstractmethod
    def get_robot_world_aabb(self, robot_idx: int) -> tuple[np.ndarray, np.ndarray]: ...

    @abstractmethod
    def find_robot_index(self, robot: Robot) -> int: ...

    @abstractmethod
    def get_robot_dof_count(self, robot_idx: int) -> int: ...

    @abstractmethod
    def get_joint_positions(self, robot_idx: int) -> np.ndarray: ...

    @abstractmethod
    def get_joint_velocities(self, robot_idx: int) -> np.ndarray: ...

    @abstractmethod
    def get_link_velocity(self, robot_idx: int, link_idx: int = 0) -> np.ndarray: ...


class MujocoSimulation(Simulation):
    """MuJoCo world assembled from MJCF, compiled on first use.

    Robots and props have to be added before the first step or query.
    """

    def __init__(self, time_step: float = config.TIME_STEP):
        self.time_step = time_step
        self._robots = []
        self._props = []
        self._model = None
        self._data = None
        self._saved = None

    def add_robot(self, robot: Robot, position, orientation=IDENTITY_QUAT) -> int:
        self._check_not_compiled()
        self._robots.append((robot, position, orientation))
        return len(self._robots) - 1

    def add_prop(self, prop: Prop, position, orientation=IDENTITY_QUAT) -> int:
        self._check_not_compiled()
        self._props.append((prop, position, orientation))
        return len(self._props) - 1

    def _check_not_compiled(self):
        if self._model is not None:
            raise RuntimeError("cannot add to a simulation that has already started")

    def to_xml(self) -> str:
        root = ET.Element("mujoco", model="graphbot")
        ET.SubElement(root, "compiler", angle="radian", autolimits="true")
        ET.SubElement(root, "option", timestep=mjcf_values([self.time_step]), gravity=mjcf_values(config.GRAVITY))
        worldbody = ET.SubElement(root, "worldbody")
        ET.SubElement(worldbody, "light", pos="0 0 5", dir="0 0 -1", directional="true")
        actuator = ET.SubElement(root, "actuator")
        for i, (prop, position, orientation) in enumerate(self._props):
            worldbody.append(prop.to_mjcf(f"prop{i}/", position, orientation))
        for i, (robot, position, orientation) in enumerate(self._robots):
            body, servos = robot.to_mjcf(f"robot{i}/", position, orientation)
            worldbody.append(body)
            actuator.extend(servos)
        return ET.tostring(root, encoding="unicode")

    def _compile(self):
        if self._model is not None:
            return
        model = mj.MjModel.from_xml_string(self.to_xml())
        data = mj.MjData(model)
        mj.mj_forward(model, data)

        self._qpos_adr, self._dof_adr, self._actuator_ids = [], [], []
        self._body_ids, self._geom_ids = [], []
        for i, (robot, _, _) in enumerate(self._robots):
            prefix = f"robot{i}/"
            joint_ids = [mj.mj_name2id(model, mj.mjtObj.mjOBJ_JOINT, name) for name in robot.joint_names(prefix)]
            self._qpos_adr.append(np.array([model.jnt_qposadr[j] for j in joint_ids], dtype=int))
            self._dof_adr.append(np.array([model.jnt_dofadr[j] for j in joint_ids], dtype=int))
            self._actuator_ids.append(np.array(
                [mj.mj_name2id(model, mj.mjtObj.mjOBJ_ACTUATOR, f"{name}_servo") for name in robot.joint_names(prefix)],
                dtype=int,
            ))
            body_ids = [mj.mj_name2id(model, mj.mjtObj.mjOBJ_BODY, name) for name in robot.body_names(prefix)]
            self._body_ids.append(body_ids)
            self._geom_ids.append(np.flatnonzero(np.isin(model.geom_bodyid, body_ids)))

        self._model, self._data = model, data

    @property
    def model(self) -> mj.MjModel:
        self._compile()
        return self._model

    @property
    def data(self) -> mj.MjData:
        self._compile()
        return self._data

    def step(self) -> None:
        mj.mj_step(self.model, self.data)

    def save_state(self) -> None:
        data = self.data
        self._saved = (
            data.time,
            data.qpos.copy(),
            data.qvel.copy(),
            data.act.copy(),
            data.ctrl.copy(),
            data.qacc_warmstart.copy(),
        )

    def restore_state(self) -> None:
        if self._saved is None:
            raise RuntimeError("no saved state to restore")
        data = self.data
        time, qpos, qvel, act, ctrl, warmstart = self._saved
        data.time = time
        data.qpos[:] = qpos
        data.qvel[:] = qvel
        data.act[:] = act
        data.ctrl[:] = ctrl
        data.qacc_warmstart[:] = warmstart
        mj.mj_forward(self.model, data)

    def set_joint_target_positions(self, robot_idx: int, targets: npt.ArrayLike) -> None:
        self.data.ctrl[self._actuator_ids[robot_idx]] = np.asarray(targets, dtype=np.float64)

    def get_robot_world_aabb(self, robot_idx: int) -> tuple[np.ndarray, np.ndarray]:
        """Bounds from the bounding spheres of the robot's geoms."""
        ids = self._geom_ids_for(robot_idx)
        centers = self.data.geom_xpos[ids]
        radii = self.model.geom_rbound[ids][:, None]
        return (centers - radii).min(axis=0), (centers + radii).max(axis=0)

    def _geom_ids_for(self, robot_idx: int) -> np.ndarray:
        self._compile()
        return self._geom_ids[robot_idx]

    def find_robot_index(self, robot: Robot) -> int:
        for i, (other, _, _) in enumerate(self._robots):
            if other is robot:
                return i
        raise ValueError(f"robot '{robot.name}' is not in the simulation")

    def get_robot_dof_count(self, robot_idx: int) -> int:
        return self._robots[robot_idx][0].dof_count

    def get_joint_positions(self, robot_idx: int) -> np.ndarray:
        self._compile()
        return self._data.qpos[self._qpos_adr[robot_idx]].copy()

    def get_joint_velocities(self, robot_idx: int) -> np.ndarray:
        self._compile()
        return self._data.qvel[self._dof_adr[robot_idx]].copy()

    def get_link_velocity(self, robot_idx: int, link_idx: int = 0) -> np.ndarray:
        self._compile()
        vel = np.zeros(6)
        body_id = self._body_ids[robot_idx][link_idx]
        mj.mj_objectVelocity(self._model, self._data, mj.mjtObj.mjOBJ_BODY, body_id, vel, 0)
        return vel
