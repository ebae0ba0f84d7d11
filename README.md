# acvdvolume

Tools for labelled 3D volumes, MetaImage files and uniform clustering.

- `acvdvolume.cleanlabels`: `find_components(volume)` returns the
  6-connected components of a label volume as `LabelComponent` records, in
  scan order. `clean_labels(volume)` returns a copy in which each label
  keeps only its largest component. Every smaller component is relabelled
  to the neighbouring label it shares the most boundary faces with. Volumes
  are numpy arrays indexed `[z, y, x]`. 1-D and 2-D arrays are accepted too.
- `acvdvolume.metaimage`: `parse_header(path)` reads a MetaImage
  (`.mhd` / `.mha`) header into a `MetaImageHeader`. `can_read_file(path)`
  checks the file name and the first key. `MetaImageReader` reads only the
  rows of a region of interest from the raw data. Problems raise
  `MetaImageError`.
- `acvdvolume.extent`: extent, increment, spacing and origin arithmetic
  under an axis-permuting `PermutationTransform`. The functions are
  `transformed_extent`, `inverse_transformed_extent`,
  `transformed_increments`, `inverse_transformed_increments`,
  `transformed_spacing` and `transformed_origin`.
- `acvdvolume.mhd_header`: `MHDHeader` renders (`render()`) and writes
  (`write(path)`) a MetaImage header. `ScalarType` holds the scalar type
  codes, and `element_type_name` maps a code to its `MET_*` name.
- `acvdvolume.oocslice`: `extract_slice(path, z)` reads one z plane.
  `write_slice(image, png_path, range_path)` writes that plane as a PNG and
  its scalar range as text. `header_flip_axes(path)` reports which axes a
  header's direction matrix reverses. `slice_components(scalar_type)` gives
  the number of PNG bytes used per pixel.
- `acvdvolume.partition` and `acvdvolume.clustering`: approximated
  centroidal Voronoi clustering of weighted points joined by a
  `ClusteringGraph`. The main classes are `ClusterMetric` and
  `UniformClustering`. `partition` also provides the helpers
  `clean_clustering`, `fill_holes`, `random_initial_sampling`,
  `weighted_initial_sampling` and `cluster_sizes`, plus an MT19937
  generator, `MersenneTwister`.
- `acvdvolume.tag`: `Tag` and `TagWithList` are per-item markers that are
  cleared in constant time.

## Installation

```
pip install .
```

## Extracting a slice

```
volume-ooc-slice volume.mhd 42
```

This command:

- reads only the rows of slice 42 of `volume.mhd`;
- writes the slice to `slice.png` in the current directory, with the top
  row of the image being row `y = 0` of the volume;
- writes the scalar range of the slice to `range.txt`, as two numbers
  separated by a space.

Single-component voxels are packed into the PNG bytes unchanged:

| Voxel values | PNG layout |
|---|---|
| One-byte values | grey levels |
| Two-byte values | grey plus alpha |
| Anything else | a 32-bit float spread over RGBA |

Multi-component slices must be 8-bit values with 2, 3 or 4 channels. If you give fewer than two arguments, the command prints a usage line. On any error it exits with status 1.

## Cleaning a label volume

```python
import numpy as np
from acvdvolume.cleanlabels import clean_labels

labels = np.zeros((4, 4, 4), dtype=np.uint8)
labels[0, 0, 0] = 1
labels[3, 3, 3] = 1
labels[3, 3, 2] = 1
cleaned = clean_labels(labels)
```

Label 1 keeps its two-voxel component. The isolated voxel at `(0, 0, 0)`
becomes 0.

## Reading a region of a MetaImage

```python
from acvdvolume.metaimage import MetaImageReader

reader = MetaImageReader("volume.mhd")
reader.z_min = reader.z_max = 10
slab = reader.read()
```

You can restrict the region with `x_min` … `z_max` or with `data_voi`. Any bound left at `None` keeps the full data extent for that side. `whole_extent()` gives the extent of the array that `read()` will return. If you set a `transform`, it permutes the axes of the result.

## Clustering

```python
from acvdvolume.partition import ClusteringGraph
from acvdvolume.clustering import ClusterMetric, UniformClustering

graph = ClusteringGraph(4, [(0, 1), (1, 2), (2, 3)])
metric = ClusterMetric([(0, 0, 0), (1, 0, 0), (5, 0, 0), (6, 0, 0)], graph)
clustering = UniformClustering(metric)
clustering.set_number_of_clusters(2)
labels = clustering.process()
```

If `save_energy` is set, the energy after each loop is written to `energy.txt`, in `output_directory` when one is given.

## What is not included

- The package reads MetaImage data that is stored raw. It does not read compressed data or data-file lists.
- `MHDHeader` writes header files only. It does not write voxel data.
- The clustering works on the points and graphs you give it. It does not load meshes or display anything.
- Label cleaning is available from Python only. There is no command for it.

## Running the tests

```
pip install .[test]
pytest
```