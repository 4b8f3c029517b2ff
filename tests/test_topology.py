import pathlib
import struct
import sys

import pytest

sys.path.insert(0, f"{pathlib.Path(__file__).parents[1].resolve().as_posix()}/src")
from tngcraft.errors import MalformedPayloadError  # noqa: E402
from tngcraft.io import BlockID  # noqa: E402
from tngcraft.topology import Topology  # noqa: E402


def test_class_Topology():

    # TEST CASE 1: Particle counts over molecule copies
    topology = Topology()
    water = topology.add_molecule("water", count=100)
    residue = topology.add_residue(topology.add_chain(water, "W"), "SOL")
    o = topology.add_atom(residue, "OW", "O")
    h1 = topology.add_atom(residue, "HW1", "H")
    h2 = topology.add_atom(residue, "HW2", "H")
    topology.add_bond(o, h1)
    topology.add_bond(o, h2)
    ion = topology.add_molecule("sodium", count=2)
    topology.add_atom(
        topology.add_residue(topology.add_chain(ion, "I"), "NA"), "NA", "Na"
    )
    assert topology.n_molecules == 102
    assert topology.n_particles == 302
    names = topology.particle_names()
    assert names[:3].tolist() == ["OW", "HW1", "HW2"]
    assert names[-1] == "NA"

    # TEST CASE 2: Round trip through the molecules block payload
    for byte_order in "<>":
        read = Topology.from_payload(topology.to_payload(byte_order), byte_order)
        assert read.n_particles == topology.n_particles
        assert [m.name for m in read.molecules] == ["water", "sodium"]
        assert [(a.name, a.atom_type) for a in read.atoms] == [
            (a.name, a.atom_type) for a in topology.atoms
        ]
        assert [(b.atom_1, b.atom_2) for b in read.bonds] == [(0, 1), (0, 2)]

    # TEST CASE 3: Invalid molecules and bonds
    with pytest.raises(ValueError):
        topology.add_molecule("ghost", count=-1)
    with pytest.raises(ValueError):
        topology.add_bond(o, 3)

    # TEST CASE 4: Truncated payload
    with pytest.raises(MalformedPayloadError):
        Topology.from_payload(topology.to_payload()[:-4])

    # TEST CASE 5: Bonds that refer to atoms outside of their molecule
    topology = Topology()
    water = topology.add_molecule("water", count=10)
    residue = topology.add_residue(topology.add_chain(water, "W"), "SOL")
    o = topology.add_atom(residue, "OW", "O")
    topology.add_bond(o, topology.add_atom(residue, "HW1", "H"))
    topology.add_atom(residue, "HW2", "H")
    payload = topology.to_payload()
    for index in (-1, 3):
        with pytest.raises(MalformedPayloadError) as error:
            Topology.from_payload(payload[:-8] + struct.pack("<q", index))
        assert error.value.context["block_id"] == BlockID.MOLECULES
