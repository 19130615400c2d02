from slamkit.frame import Feature, Frame
from slamkit.lie import SE3
from slamkit.mappoint import MapPoint
from slamkit.slam_map import Map


def _keyframe(x):
    frame = Frame.create()
    frame.pose = SE3(None, [x, 0.0, 0.0])
    frame.set_keyframe()
    return frame


def test_inserted_keyframe_is_active():
    m = Map()
    frame = _keyframe(0.0)
    m.insert_keyframe(frame)
    assert m.all_keyframes()[frame.keyframe_id] is frame
    assert m.active_keyframes()[frame.keyframe_id] is frame
    assert m.current_frame is frame


def test_same_keyframe_id_replaces():
    m = Map()
    first = _keyframe(0.0)
    second = Frame.create()
    second.keyframe_id = first.keyframe_id
    m.insert_keyframe(first)
    m.insert_keyframe(second)
    assert len(m.all_keyframes()) == 1
    assert m.all_keyframes()[first.keyframe_id] is second


def test_returned_dicts_are_copies():
    m = Map()
    frame = _keyframe(0.0)
    m.insert_keyframe(frame)
    m.active_keyframes().clear()
    m.all_map_points()[123] = MapPoint.create()
    assert frame.keyframe_id in m.active_keyframes()
    assert m.all_map_points() == {}


def test_farthest_keyframe_is_deactivated():
    m = Map()
    frames = [_keyframe(float(x)) for x in range(8)]
    for frame in frames:
        m.insert_keyframe(frame)
    active = m.active_keyframes()
    assert len(active) == m.num_active_keyframes
    assert frames[0].keyframe_id not in active
    assert len(m.all_keyframes()) == len(frames)


def test_very_close_keyframe_is_deactivated_first():
    m = Map()
    frames = [_keyframe(float(x)) for x in range(7)]
    frames.append(_keyframe(6.1))
    for frame in frames:
        m.insert_keyframe(frame)
    active = m.active_keyframes()
    assert frames[6].keyframe_id not in active
    assert frames[0].keyframe_id in active
    assert frames[7].keyframe_id in active


def test_deactivation_drops_observations_and_landmarks():
    m = Map()
    first = _keyframe(0.0)
    feat = Feature(first, (1.0, 1.0))
    first.features_left.append(feat)
    first.features_right.append(None)
    mp = MapPoint.create()
    mp.add_observation(feat)
    feat.attach_map_point(mp)
    m.insert_map_point(mp)

    m.insert_keyframe(first)
    for x in range(1, 8):
        m.insert_keyframe(_keyframe(float(x)))

    assert first.keyframe_id not in m.active_keyframes()
    assert mp.observed_times == 0
    assert feat.map_point() is None
    assert mp.id not in m.active_map_points()
    assert m.all_map_points()[mp.id] is mp


def test_clean_map_removes_unobserved_active_landmarks():
    m = Map()
    observed = MapPoint.create()
    observed.add_observation(Feature())
    lonely = MapPoint.create()
    m.insert_map_point(observed)
    m.insert_map_point(lonely)
    assert m.clean_map() == 1
    active = m.active_map_points()
    assert observed.id in active
    assert lonely.id not in active
    assert lonely.id in m.all_map_points()