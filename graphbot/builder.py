"""Turn a derived robot graph into a robot MuJoCo can load.

Nodes are links, edges are joints from the parent link to the child link.

node attributes   shape (capsule | box | sphere), length, radius, density, rgba
edge attributes   type (hinge | fixed), axis, offset (fraction of the parent
                  length where the child is attached), rotation (xyz euler
                  angles in degrees), lower, upper (radians), kp, damping
"""
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field
from typing import Any

import networkx as nx
import numpy as np

from graphbot import config
from graphbot.graph import Graph

SHAPES = ("capsule", "box", "sphere")
JOINT_TYPES = ("hinge", "fixed")


@dataclass
class Link:
    name: str
    parent: int = -1
    shape: str = "capsule"
    length: float = config.LINK_LENGTH
    radius: float = config.LINK_RADIUS
    density: float = config.LINK_DENSITY
    rgba: list[float] = field(default_factory=lambda: [0.45, 0.5, 0.55, 1.0])
    joint_type: str = "free"
    joint_axis: list[float] = field(default_factory=lambda: [0.0, 0.0, 1.0])
    joint_offset: float = 1.0
    joint_rotation: list[float] = field(default_factory=lambda: [0.0, 0.0, 0.0])
    joint_lower: float = -config.JOINT_LIMIT
    joint_upper: float = config.JOINT_LIMIT
    joint_kp: float = config.JOINT_KP
    joint_damping: float = 0.1


@dataclass
class Robot:
    name: str
    links: list[Link]

    @property
    def dof_count(self) -> int:
        return sum(link.joint_type == "hinge" for link in self.links)

    def joint_names(self, prefix: str) -> list[str]:
        return [f"{prefix}{link.name}_joint" for link in self.links if link.joint_type == "hinge"]

    def body_names(self, prefix: str) -> list[str]:
        return [f"{prefix}{link.name}" for link in self.links]

    def to_mjcf(self, prefix: str, position, orientation) -> tuple[ET.Element, list[ET.Element]]:
        """MJCF body tree of the robot, and one position servo per hinge."""
        bodies: list[ET.Element] = []
        actuators = []
        for link in self.links:
            attrib = {"name": f"{prefix}{link.name}"}
            if link.parent < 0:
                attrib["pos"] = mjcf_values(position)
                attrib["quat"] = mjcf_values(orientation)
                body = ET.Element("body", attrib)
                ET.SubElement(body, "freejoint", name=f"{prefix}{link.name}_root")
            else:
                parent = self.links[link.parent]
                attrib["pos"] = mjcf_values([link.joint_offset * parent.length, 0.0, 0.0])
                attrib["euler"] = mjcf_values(np.radians(link.joint_rotation))
                body = ET.SubElement(bodies[link.parent], "body", attrib)
                if link.joint_type == "hinge":
                    joint_name = f"{prefix}{link.name}_joint"
                    ET.SubElement(
                        body, "joint",
                        name=joint_name,
                        type="hinge",
                        axis=mjcf_values(link.joint_axis),
                        range=mjcf_values([link.joint_lower, link.joint_upper]),
                        damping=mjcf_values([link.joint_damping]),
                    )
                    actuators.append(ET.Element(
                        "position",
                        name=f"{joint_name}_servo",
                        joint=joint_name,
                        kp=mjcf_values([link.joint_kp]),
                        ctrlrange=mjcf_values([link.joint_lower, link.joint_upper]),
                    ))
            ET.SubElement(body, "geom", _geom_attrib(link, prefix))
            bodies.append(body)
        return bodies[0], actuators


def mjcf_values(values) -> str:
    return " ".join(f"{float(v):.9g}" for v in np.ravel(values))


def _geom_attrib(link: Link, prefix: str) -> dict[str, str]:
    attrib = {
        "name": f"{prefix}{link.name}_geom",
        "type": link.shape,
        "density": mjcf_values([link.density]),
        "rgba": mjcf_values(link.rgba),
        # touches the world, never itself
        "contype": "1",
        "conaffinity": "0",
    }
    if link.shape == "capsule":
        attrib["fromto"] = mjcf_values([0.0, 0.0, 0.0, link.length, 0.0, 0.0])
        attrib["size"] = mjcf_values([link.radius])
    elif link.shape == "box":
        attrib["pos"] = mjcf_values([link.length / 2, 0.0, 0.0])
        attrib["size"] = mjcf_values([link.length / 2, link.radius, link.radius])
    else:
        attrib["pos"] = mjcf_values([link.length / 2, 0.0, 0.0])
        attrib["size"] = mjcf_values([link.radius])
    return attrib


def _make_link(name: str, node_attrs: dict[str, Any], parent: int, edge_attrs: dict[str, Any]) -> Link:
    link = Link(name=name, parent=parent)
    shape = node_attrs.get("shape", link.shape)
    if shape not in SHAPES:
        raise ValueError(f"link '{name}': unknown shape '{shape}'")
    link.shape = shape
    link.length = float(node_attrs.get("length", link.length))
    link.radius = float(node_attrs.get("radius", link.radius))
    link.density = float(node_attrs.get("density", link.density))
    link.rgba = [float(c) for c in node_attrs.get("rgba", link.rgba)]

    if parent < 0:
        return link
    joint_type = edge_attrs.get("type", "hinge")
    if joint_type not in JOINT_TYPES:
        raise ValueError(f"joint to '{name}': unknown type '{joint_type}'")
    link.joint_type = joint_type
    link.joint_axis = [float(a) for a in edge_attrs.get("axis", link.joint_axis)]
    link.joint_offset = float(edge_attrs.get("offset", link.joint_offset))
    link.joint_rotation = [float(a) for a in edge_attrs.get("rotation", link.joint_rotation)]
    link.joint_lower = float(edge_attrs.get("lower", link.joint_lower))
    link.joint_upper = float(edge_attrs.get("upper", link.joint_upper))
    link.joint_kp = float(edge_attrs.get("kp", link.joint_kp))
    link.joint_damping = float(edge_attrs.get("damping", link.joint_damping))
    return link


def build_robot(graph: Graph) -> Robot:
    """Links in depth-first order from the root, the node nothing points to."""
    robot_graph = graph.to_networkx()
    if robot_graph.number_of_nodes() == 0:
        raise ValueError(f"robot graph '{graph.name}' is empty")
    if not nx.is_arborescence(robot_graph):
        raise ValueError(f"robot graph '{graph.name}' must be a tree of links")

    root = next(n for n, degree in robot_graph.in_degree() if degree == 0)
    index = {}
    links = []
    for node_id in nx.dfs_preorder_nodes(robot_graph, root):
        node_attrs = dict(robot_graph.nodes[node_id])
        node_attrs.pop("label", None)
        parents = list(robot_graph.predecessors(node_id))
        if parents:
            edge_attrs = next(iter(robot_graph.get_edge_data(parents[0], node_id).values()))
            link = _make_link(node_id, node_attrs, index[parents[0]], edge_attrs)
        else:
            link = _make_link(node_id, node_attrs, -1, {})
        index[node_id] = len(links)
        links.append(link)
    return Robot(graph.name, links)
