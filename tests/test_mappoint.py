import gc

import numpy as np

from slamkit.frame import Feature
from slamkit.mappoint import MapPoint


def test_create_assigns_consecutive_ids():
    a = MapPoint.create()
    b = MapPoint.create()
    assert b.id == a.id + 1


def test_position_round_trip():
    mp = MapPoint.create()
    np.testing.assert_allclose(mp.pos, np.zeros(3))
    mp.pos = [1.5, -2.0, 3.25]
    np.testing.assert_allclose(mp.pos, [1.5, -2.0, 3.25])


def test_pos_returns_a_copy():
    mp = MapPoint(0, [1.0, 2.0, 3.0])
    p = mp.pos
    p[0] = 100.0
    np.testing.assert_allclose(mp.pos, [1.0, 2.0, 3.0])


def test_add_observation_counts():
    mp = MapPoint.create()
    a, b = Feature(), Feature()
    mp.add_observation(a)
    mp.add_observation(b)
    assert mp.observed_times == 2
    obs = mp.observations()
    assert len(obs) == 2
    assert obs[0] is a and obs[1] is b


def test_remove_observation_unlinks_feature():
    mp = MapPoint.create()
    feat = Feature()
    feat.attach_map_point(mp)
    mp.add_observation(feat)
    assert mp.remove_observation(feat) is True
    assert mp.observed_times == 0
    assert mp.observations() == []
    assert feat.map_point() is None


def test_remove_unknown_feature_is_ignored():
    mp = MapPoint.create()
    known, unknown = Feature(), Feature()
    mp.add_observation(known)
    assert mp.remove_observation(unknown) is False
    assert mp.observed_times == 1
    assert mp.observations() == [known]


def test_observations_skip_vanished_features():
    mp = MapPoint.create()
    kept = Feature()
    gone = Feature()
    mp.add_observation(kept)
    mp.add_observation(gone)
    del gone
    gc.collect()
    assert mp.observations() == [kept]